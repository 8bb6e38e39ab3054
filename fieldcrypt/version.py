"""FieldCrypt Meta information.
   FieldCrypt encrypts selected record fields with a session-bound key.
"""
__title__ = 'fieldcrypt'
__description__ = (
   'FieldCrypt encrypts selected record fields with a '
   'session-bound key before they reach remote storage.'
)
__version__ = '0.3.0'
__copyright__ = 'Copyright (c) 2026 Jesus Lara'
__author__ = 'Jesus Lara'
__author_email__ = 'jesuslarag@gmail.com'
__license__ = 'Apache-2.0'
