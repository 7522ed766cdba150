"""auth/ -- Identity and credential lifecycle for Config Studio.

Users, sessions, signed token pairs and encrypted API keys. Build the whole
package through auth.factory.create_auth_services(); SessionManager is the
facade every caller goes through.

Layer rule: auth/ imports only stdlib, third-party libraries and core/.
It does NOT import from api/. api/ imports from auth/, not the other way around.
"""
