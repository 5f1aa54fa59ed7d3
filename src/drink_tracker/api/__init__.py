"""HTTP ingress and the live event stream."""
