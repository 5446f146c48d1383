"""Configuration settings for Tourguide."""

CONFIG = {
    "gps_poll_interval": 3,  # seconds
    "log_interval": 10,  # seconds between STATE log entries
    # Deviation handling
    "deviation_threshold": 50,  # meters - off-route beyond this
    "deviation_check_interval": 5,  # seconds - min spacing between real deviation checks
    "auto_correct_deviations": True,
    "reconnect_lookahead_points": 10,  # route coordinates scanned past the nearest one
    "reconnect_lookahead_distance": 200,  # meters - slack allowed for a point further along
    # Tour
    "poi_radius": 25,  # meters - default "reached" radius when a POI has none
    "poi_approach_distance": 100,  # meters
    "auto_advance_to_next_poi": True,
    "estimated_minutes_per_poi": 10,
    # Turn-by-turn
    "instruction_announce_distance": 100,  # meters
    "arrival_radius": 20,  # meters - end of a navigation plan counts as reached
    # Audio
    "audio_enabled": True,
    "language": "en-US",
    "speech_rate": 150,  # espeak words per minute
    # Routing
    "ors_url": "https://api.openrouteservice.org/v2/directions/foot-walking/geojson",
    "routing_timeout": 15,  # seconds
    "route_cache_size": 50,
    "walking_speed": 1.4,  # m/s - used for fallback route durations
    "fallback_waypoint_spacing": 200,  # meters between interpolated fallback points
}
