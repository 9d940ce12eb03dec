"""Domain layer - tenant value objects and the structured document model."""
