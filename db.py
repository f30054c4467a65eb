"""Supabase client factory for the optional remote catalog. Cached per Streamlit server."""
import os
from typing import Optional, Tuple

import streamlit as st
from dotenv import load_dotenv
from supabase import create_client, Client

load_dotenv()


def supabase_settings() -> Optional[Tuple[str, str]]:
    """(url, key) from the environment / .env, or None when either is missing."""
    url = os.getenv("SUPABASE_URL")
    key = os.getenv("SUPABASE_KEY")
    if not url or not key:
        return None
    return url, key


def remote_configured() -> bool:
    return supabase_settings() is not None


def connect() -> Client:
    settings = supabase_settings()
    if settings is None:
        raise ValueError("Remote catalog needs SUPABASE_URL and SUPABASE_KEY in the environment or .env")
    return create_client(*settings)


@st.cache_resource
def get_supabase() -> Client:
    return connect()


def get_supabase_uncached() -> Client:
    """For the CLI (no Streamlit runtime)."""
    return connect()
