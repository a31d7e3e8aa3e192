"""fleetpay core: domain models, persistence and gateway retry policy."""
