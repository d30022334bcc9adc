from .vm import VM
