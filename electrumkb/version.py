PACKAGE_VERSION = '0.4.2'                          # version of the client package
CLIENT_NAME = 'electrumkb'
# Negotiated with the server, sent as a plain string like the mobile clients do
PROTOCOL_VERSION = '1.4'
