"""Command line interface for ipquorum."""
