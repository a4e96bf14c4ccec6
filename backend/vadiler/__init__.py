"""
Vadiler - Storefront & Admin Backend
Çiçek siparişi, ödeme ve yönetim paneli API'si
"""
__version__ = "1.0.0"
