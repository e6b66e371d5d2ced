"""airoute command line interface."""
