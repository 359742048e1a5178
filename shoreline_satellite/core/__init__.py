"""Core utilities and shared infrastructure.

- config: Run configuration loading and validation
- constants: Named constants, enums, band names, resource defaults
- exceptions: Pipeline exception hierarchy
"""
