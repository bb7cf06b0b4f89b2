"""
External collaborators for the POI engine.

Each module wraps one third-party service (Nominatim, Overpass, Yandex Geocoder)
or a local listing, and normalizes its output into engine models. Sources never
raise transport errors to the orchestrator; see each module for its contract.
"""
