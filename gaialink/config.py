"""Methods for dealing with gaialink-wide configuration (DB access, join
defaults).
"""

import os

def get_config():
    """Retrieves global (singleton) config object.

    Retrieves the default config, with the database location overridable from
    the environment (`GAIALINK_DB_URL`, or `GAIALINK_DB_HOST` /
    `GAIALINK_DB_PORT` / `GAIALINK_DB_PASSWORD`).
    """
    DEFAULT = {
            'db': {
                'user': 'postgres',
                'password': 'gaia345',
                'host': 'localhost',
                'port': 9464,
                'db': 'gaiacore',
                # If set, used verbatim instead of the fields above.
                'url': None,
            },
            'join': {
                # OMOP concept for the "Person" domain; history rows in any
                # other domain produce exposures with an unassigned person.
                'person_domain_concept_id': 1147314,
                'unassigned_person_id': 0,
                'default_predicate': 'within',
                # Seconds; None means no deadline.
                'timeout': None,
            },
            'storage': {
                'database_schema': 'working',
            },
    }

    env = os.environ
    if env.get('GAIALINK_DB_URL'):
        DEFAULT['db']['url'] = env['GAIALINK_DB_URL']
    if env.get('GAIALINK_DB_HOST'):
        DEFAULT['db']['host'] = env['GAIALINK_DB_HOST']
    if env.get('GAIALINK_DB_PORT'):
        DEFAULT['db']['port'] = int(env['GAIALINK_DB_PORT'])
    if env.get('GAIALINK_DB_PASSWORD'):
        DEFAULT['db']['password'] = env['GAIALINK_DB_PASSWORD']
    return DEFAULT
