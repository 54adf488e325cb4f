"""Data-access functions: the specific query shapes the services use."""
