"""
Core services: encryption, audit, permissions, sessions, MFA, biometrics and the
authentication gateway. Web adapters live in `warden.web`.
"""
