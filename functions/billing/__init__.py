# Stripe webhook reconciliation
