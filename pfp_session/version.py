"""PfP Session Meta information.
   PfP Session keeps the master password, the key material derived
   from it and the encrypted, namespaced credential storage.
"""
__title__ = 'pfp_session'
__description__ = (
   'PfP Session keeps the master password lifecycle and the encrypted '
   'credential storage of a password manager.'
)
__version__ = '0.3.0'
__copyright__ = 'Copyright (c) 2026 PfP contributors'
__author__ = 'PfP contributors'
__author_email__ = 'pfp@example.org'
__license__ = 'MPL-2.0'
__url__ = 'https://github.com/pfp-project/pfp-session'
