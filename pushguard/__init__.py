__author__ = 'pushguard'
__version__ = '0.3.0'
