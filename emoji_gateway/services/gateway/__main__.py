"""Entry point for: python3 -m emoji_gateway.services.gateway"""
from emoji_gateway.services.gateway.api import main

main()
