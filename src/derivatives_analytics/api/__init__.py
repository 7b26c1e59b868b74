"""HTTP surface of the derivatives analytics engine."""
