"""Payment service: Stripe payment intents priced by the core service."""

__version__ = "1.0.0"
