"""Service layer - provisioning steps and their orchestration."""
