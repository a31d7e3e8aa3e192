"""Operator CLI for the fleetpay gateway service."""
