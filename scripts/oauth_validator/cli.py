"""
OAuth Validator CLI
===================

Runs the service account OAuth client checks against the cluster in the
current kube config.
"""

import click
import time
from dataclasses import replace

# Test clusters use self-signed certificates
import urllib3
urllib3.disable_warnings(urllib3.exceptions.InsecureRequestWarning)

from .clients.callback import AuthorizationSignals, CallbackServer
from .clients.kubernetes import KubernetesClient
from .logging import LOG_LEVELS, log_error, log_info, set_log_level
from .phases.service_account_events import (
    ServiceAccountEventsPhase,
    default_scenarios,
    load_scenarios,
)
from .settings import FlowSettings


@click.command(context_settings={"help_option_names": ["-h", "--help"]})
@click.option('--namespace', default='test-project', help='Project holding the service account')
@click.option('--service-account', 'sa_name', default='default', help='Service account used as OAuth client')
@click.option('--admin-user', default=None, help='User answering the challenge (default: OAUTH_CHALLENGE_USER or harold)')
@click.option('--password', default=None, help='Password sent after the challenge')
@click.option('--callback-host', default='127.0.0.1', help='Interface for the local redirect URI endpoint')
@click.option('--callback-port', default=0, type=int, help='Port for the redirect URI endpoint (0 = any free port)')
@click.option('--code-timeout', default=None, type=float, help='Seconds to wait for the code or error')
@click.option('--csrf-token', default=None, help='Value of the X-CSRF-Token header')
@click.option('--verify-tls/--insecure', default=None, help='Verify the API server certificate')
@click.option('--create-token-secret', is_flag=True, help='Request a token secret when the cluster does not create one')
@click.option('--skip-project', is_flag=True, help='Do not create the project')
@click.option('--scenarios', default='all', help='Comma-separated scenario list or "all"')
@click.option('--scenarios-file', type=click.Path(exists=True, dir_okay=False), default=None,
              help='YAML file with scenarios (replaces the built-in ones)')
@click.option('--log-level', type=click.Choice(LOG_LEVELS, case_sensitive=False), default=None,
              help='Override LOG_LEVEL')
@click.pass_context
def main(ctx, namespace, sa_name, admin_user, password, callback_host, callback_port,
         code_timeout, csrf_token, verify_tls, create_token_secret, skip_project,
         scenarios, scenarios_file, log_level):
    """
    Service account OAuth client validation

    Walks the OAuth authorization flow for a service account client and
    checks the events emitted for bad redirect configurations.
    """
    if log_level:
        set_log_level(log_level)

    settings = FlowSettings.from_env()
    overrides = {
        'challenge_username': admin_user,
        'challenge_password': password,
        'code_timeout': code_timeout,
        'csrf_token': csrf_token,
        'verify_tls': verify_tls,
    }
    settings = replace(settings, **{
        key: value for key, value in overrides.items() if value is not None
    })

    if scenarios_file:
        available = load_scenarios(scenarios_file, namespace, sa_name)
    else:
        available = default_scenarios(namespace, sa_name)
    if scenarios != 'all':
        wanted = [s.strip() for s in scenarios.split(',') if s.strip()]
        unknown = sorted(set(wanted) - {s.name for s in available})
        if unknown:
            raise click.BadParameter(f"unknown scenario(s): {', '.join(unknown)}",
                                     param_hint='--scenarios')
        available = [s for s in available if s.name in wanted]

    print("\n" + "=" * 70)
    print("  Service Account OAuth Client Validation")
    print("=" * 70)
    print("\nConfiguration:")
    print(f"  Namespace:        {namespace}")
    print(f"  Service account:  {sa_name}")
    print(f"  Challenge user:   {settings.challenge_username}")
    print(f"  Scenarios:        {len(available)}")
    print(f"  Code timeout:     {settings.code_timeout}s")
    print(f"  Verify TLS:       {settings.verify_tls}")
    print()

    start_time = time.time()
    signals = AuthorizationSignals()
    try:
        k8s = KubernetesClient(namespace=namespace)
        log_info(f"🔧 API server: {k8s.api_host}")
        if not skip_project:
            k8s.ensure_project(admin_user=settings.challenge_username)
        k8s.wait_for_service_account(sa_name)

        with CallbackServer(signals, host=callback_host, port=callback_port) as callback:
            phase = ServiceAccountEventsPhase(
                k8s,
                signals,
                callback.callback_url,
                settings=settings,
                sa_name=sa_name,
                create_token_secret=create_token_secret,
            )
            results = phase.run(available)
    except KeyboardInterrupt:
        log_error("\n⚠️  Interrupted")
        ctx.exit(130)
    except Exception as e:
        log_error(f"\n❌ Validation aborted: {e}")
        ctx.exit(1)

    duration = time.time() - start_time
    print("=" * 70)
    print(f"  Passed: {len(available) - len(results['failed'])}/{len(available)}"
          f"  ({duration:.1f}s)")
    for name in results['failed']:
        print(f"  ❌ {name}: {results['scenarios'][name].get('error')}")
    print("=" * 70)

    ctx.exit(0 if results['passed'] else 1)


if __name__ == '__main__':
    main()
