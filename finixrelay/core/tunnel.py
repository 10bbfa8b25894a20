"""Advertised tunnel / peer addresses derived from configured templates"""

from finixrelay.exceptions import ConfigError

DEFAULT_PUBLIC_URL_TEMPLATE = "finixdesk://{tunnel_id}.render.com"
DEFAULT_PEER_URL_TEMPLATE = "rdp://{device_id}.finixdesk.com:3389"


class TunnelAddresses:
    """Formats publicUrl (per tunnel id) and tunnelUrl (per device id).

    Both are pure functions of their input, so a given id always maps to the
    same address for the life of the process.
    """

    def __init__(self, public_url_template: str = DEFAULT_PUBLIC_URL_TEMPLATE,
                 peer_url_template: str = DEFAULT_PEER_URL_TEMPLATE):
        self.public_url_template = public_url_template
        self.peer_url_template = peer_url_template

        self._check('tunnel.public_url_template', public_url_template, 'tunnel_id')
        self._check('tunnel.peer_url_template', peer_url_template, 'device_id')

    @staticmethod
    def _check(key: str, template: str, placeholder: str):
        if not isinstance(template, str) or '{' + placeholder + '}' not in template:
            raise ConfigError(f"{key} must contain {{{placeholder}}}: {template!r}")
        try:
            template.format(**{placeholder: 'x'})
        except (KeyError, IndexError, ValueError) as e:
            raise ConfigError(f"{key} is not a valid template: {e}")

    def public_url(self, tunnel_id: str) -> str:
        return self.public_url_template.format(tunnel_id=tunnel_id)

    def peer_url(self, device_id: str) -> str:
        return self.peer_url_template.format(device_id=device_id)
