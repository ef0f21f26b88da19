"""kubeboot: bootstrap a local minikube cluster with ArgoCD and monitoring."""

__version__ = "0.1.0"
