from functools import lru_cache

from dotenv import load_dotenv
load_dotenv()

from foodrelay.core.config import settings
from foodrelay.services.geocode import geocode_address
from foodrelay.services.notifier import SmtpMailer


@lru_cache(maxsize=1)
def get_repo():
    if settings.use_mongo:
        from foodrelay.repos.mongo import MongoRepo
        return MongoRepo(settings.mongo_uri, settings.mongo_db)
    from foodrelay.repos.inmemory import InMemoryRepo
    return InMemoryRepo()

@lru_cache(maxsize=1)
def get_mailer():
    return SmtpMailer(settings)

def get_geocoder():
    return geocode_address

@lru_cache(maxsize=1)
def get_matcher():
    from foodrelay.services.proximity import ProximityMatcher, SearchPolicy
    return ProximityMatcher(get_repo(), get_mailer(), SearchPolicy.from_settings(settings))
