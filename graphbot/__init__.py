"""Robot design by graph grammar, with MPPI trajectory optimization."""
