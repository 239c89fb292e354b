"""core/ -- Kernel: configuration. Imports nothing from api/ or auth/."""
