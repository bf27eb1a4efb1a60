"""Core crossfield module

This module implements a simulator for charged particles crossing a
velocity filter made of uniform, crossed electric and magnetic fields.
"""
from .core import *
from .computetools import *
from .diagnostics import *
from .constructors import *
from .experiments import *
