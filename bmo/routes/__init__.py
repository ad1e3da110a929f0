"""HTTP routers, one module per resource. ``bmo.api`` mounts them all."""
