"""
coprocessor package

Vision coprocessor side of the link: publishes detection telemetry, accepts
commands from the robot controller, and answers clock synchronization
requests.
"""
