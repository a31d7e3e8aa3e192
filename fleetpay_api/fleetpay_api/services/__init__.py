"""Domain services behind the fleetpay API."""
