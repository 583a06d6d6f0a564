"""Pipeline configuration, driver and reporters."""
