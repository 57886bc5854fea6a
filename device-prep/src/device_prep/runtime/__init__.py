"""Runtime helpers shared by the package-manager and target-prep layers."""
