"""Navigator Vault Meta information.
   Navigator Vault keeps per-agent secrets encrypted at rest.
"""
__title__ = 'navigator_vault'
__description__ = (
   'Navigator Vault keeps per-agent files and transcripts '
   'encrypted at rest under a keychain-held master key.'
)
__version__ = '1.0.0'
__copyright__ = 'Copyright (c) 2023 Jesus Lara'
__author__ = 'Jesus Lara'
__author_email__ = 'jesuslarag@gmail.com'
__license__ = 'Apache-2.0'
__url__ = 'https://github.com/phenobarbital/navigator-vault'
