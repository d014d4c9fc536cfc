# ReviewFlow - Delayed Review Requests over SMS and Email
# =======================================================
# Completed orders come in from order platforms, wait out a per-platform
# delay, and turn into review requests with signed links.
#
# ARCHITECTURE LAYERS:
# - Presentation:   FastAPI app (webhooks, landing resolve, operator API)
# - Application:    Queue processor, dispatcher, webhook ingester, wiring
# - Domain:         Pure rules (status progression, SMS encoding, templates)
# - Infrastructure: SQLite stores, vendor clients, order-source adapters
#
# Vendors and order sources sit behind small interfaces, so adding one
# touches the infrastructure layer only.
