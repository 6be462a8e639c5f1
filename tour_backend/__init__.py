"""
Tour robot backend package.

This service is responsible for:
- Admitting visitor tours onto robots and tracking each tour from PIN issue to completion.
- Keeping the link to the robot's rosbridge endpoint alive and relaying commands over it.
- Calling the Gemini API to narrate tour waypoints.

The HTTP/WebSocket server is implemented with Tornado.
"""
