"""auth/ -- Credential and login-token stores for loginkeep.

Layer rule: auth/ imports only core/, stdlib and third-party libraries.
core/ never imports from auth/.
"""
