"""Command-line interface for the stage-escrow local chain (`stage-escrow`)."""
