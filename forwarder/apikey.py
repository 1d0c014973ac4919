"""
Mackerel API key resolution.

Priority:
1. api_key (literal, optionally KMS encrypted + base64)
2. api_key_parameter (SSM Parameter Store name)
3. MACKEREL_APIKEY environment variable
4. MACKEREL_APIKEY_PARAMETER environment variable
"""

import base64
import binascii
import logging
import os
from typing import Callable, Optional

from .errors import ApiKeyNotFoundError
from .interfaces import Decrypter, ParameterStore

logger = logging.getLogger("forwarder.apikey")


class ApiKeyResolver:
    def __init__(
        self,
        api_key: Optional[str] = None,
        api_key_parameter: Optional[str] = None,
        with_decrypt: bool = False,
        parameter_store: Optional[Callable[[], ParameterStore]] = None,
        decrypter: Optional[Callable[[], Decrypter]] = None,
    ):
        """
        Args:
            api_key: Literal API key
            api_key_parameter: Name of the SSM parameter holding the key
            with_decrypt: The key is encrypted; MACKEREL_APIKEY_WITH_DECRYPT also enables this
            parameter_store: Factory for the parameter store, only called when needed
            decrypter: Factory for the decrypter, only called when needed
        """
        self.api_key = api_key
        self.api_key_parameter = api_key_parameter
        self.with_decrypt = with_decrypt
        self._parameter_store = parameter_store
        self._decrypter = decrypter

    def _decrypt_enabled(self) -> bool:
        return self.with_decrypt or bool(os.getenv("MACKEREL_APIKEY_WITH_DECRYPT"))

    def _literal(self, key: str, decrypt: bool) -> str:
        if not decrypt:
            return key
        if self._decrypter is None:
            raise ApiKeyNotFoundError("api key decryption is enabled but no decrypter is configured")
        try:
            blob = base64.b64decode(key, validate=True)
        except binascii.Error as e:
            raise ValueError(f"encrypted api key is not valid base64: {e}") from e
        return self._decrypter().decrypt(blob).decode("utf-8")

    def _parameter(self, name: str, decrypt: bool) -> str:
        if self._parameter_store is None:
            raise ApiKeyNotFoundError(f"no parameter store configured to read {name}")
        return self._parameter_store().get_parameter(name, with_decryption=decrypt)

    def resolve(self) -> str:
        """
        Find the API key. Blocking: may call SSM or KMS.

        Raises:
            ApiKeyNotFoundError: if no source is configured
        """
        decrypt = self._decrypt_enabled()

        if self.api_key:
            logger.debug("using api key from configuration (decrypt=%s)", decrypt)
            return self._literal(self.api_key, decrypt)
        if self.api_key_parameter:
            logger.debug("reading api key from parameter %s", self.api_key_parameter)
            return self._parameter(self.api_key_parameter, decrypt)

        key = os.getenv("MACKEREL_APIKEY")
        if key:
            logger.debug("using api key from MACKEREL_APIKEY (decrypt=%s)", decrypt)
            return self._literal(key, decrypt)
        name = os.getenv("MACKEREL_APIKEY_PARAMETER")
        if name:
            logger.debug("reading api key from parameter %s (MACKEREL_APIKEY_PARAMETER)", name)
            return self._parameter(name, decrypt)

        raise ApiKeyNotFoundError("api key for the mackerel is not found")
