"""Billsync: webhook ingestion and subscription state sync for Stripe and LemonSqueezy."""
