# Infrastructure Layer
# ====================
# Contains all external service integrations:
# - config/: Environment and settings management
# - persistence/: SQLite schema, order queue and notification stores
# - links/: Signed review links (JWT)
# - messaging/: SMS and email vendors, rate limiting, webhook signatures
# - integrations/: Order-source adapters (Dully webhooks, EasyTable polling)
#
# This layer can be replaced entirely without affecting domain/application layers.
