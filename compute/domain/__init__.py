from .vm import VM, VMState, ResourceSpec, NetworkConfig, VMMetadata, MAX_RESOURCE_VALUE
