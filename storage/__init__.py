"""
Storage Package.

This package manages all persistence of the coordination core.
The shared database is the only channel between blotter instances.

Modules:
- database: Engine, session factory, transaction scope
- models/: ORM models
- repositories/: Data access layer
"""
