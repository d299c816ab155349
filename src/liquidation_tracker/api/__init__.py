"""HTTP API for the liquidation tracker."""
