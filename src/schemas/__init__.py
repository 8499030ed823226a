# src/schemas/__init__.py
from .payment import *
from .project import *
from .activity import *
