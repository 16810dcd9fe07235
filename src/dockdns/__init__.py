"""dockdns package"""
