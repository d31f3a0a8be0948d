"""
Program data modules (forms, beneficiaries, communities, volunteers).

Each module owns its models, service functions and blueprint, and reuses the
platform pieces: auth, section gating, audit, storage and the DB session.
"""
