"""KUBECHAOS application package."""
