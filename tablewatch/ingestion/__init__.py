"""Components for reading the current state of watched tables."""
