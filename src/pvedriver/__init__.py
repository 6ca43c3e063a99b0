"""Proxmox VE machine provisioning driver."""
