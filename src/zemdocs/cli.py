from __future__ import annotations

import getpass
import logging
import signal
import sys
import threading
from typing import Any

USAGE = """\
Uso: zemdocs <comando> [argumentos]

Comandos:
  init                      cria diretórios e o modelo municipios.yaml
  sync [COMPETENCIA]        sincroniza uma competência (YYYYMM) agora
  run                       executa o agendador até SIGINT/SIGTERM
  ultimo-rps                consulta o último RPS enviado à prefeitura
  xml NUMERO COMPETENCIA    imprime o XML armazenado de uma NFS-e
"""

MUNICIPIOS_TEMPLATE = """\
# Municípios sincronizados pelo zemdocs.
# O token de cada município é lido da variável indicada em token_env
# ou, na falta dela, do keychain do sistema (serviço "zemdocs").
municipios:
  - ibge: "2105302"
    nome: Imperatriz-MA
    provider: imperatriz
    base_url: https://nfse.imperatriz.ma.gov.br/api/v1/nfse
    token_env: IMPERATRIZ_TOKEN
"""


def _init_config() -> None:
    """Create config/data directories and the municipios.yaml template."""
    from zemdocs.config import (
        IBGE_IMPERATRIZ,
        _set_keyring_token,
        get_config_dir,
        get_data_dir,
        get_xml_storage_dir,
    )

    config_dir = get_config_dir()
    data_dir = get_data_dir()

    config_dir.mkdir(parents=True, exist_ok=True)
    data_dir.mkdir(parents=True, exist_ok=True)
    get_xml_storage_dir().mkdir(parents=True, exist_ok=True)

    dest = config_dir / "municipios.yaml.example"
    if dest.exists():
        print(f"  já existe: {dest}")
    else:
        dest.write_text(MUNICIPIOS_TEMPLATE, encoding="utf-8")
        print(f"  criado: {dest}")

    # --- Token setup ---
    print()
    token_stored = False
    try:
        answer = input("Deseja armazenar o token da API de Imperatriz no keychain agora? [s/N]: ")
        if answer.strip().lower() in ("s", "sim", "y", "yes"):
            token = getpass.getpass("Token (IMPERATRIZ_TOKEN): ").strip()
            if token and _set_keyring_token(IBGE_IMPERATRIZ, token):
                print("  Token armazenado no keychain do sistema.")
                token_stored = True
            else:
                print("  Não foi possível armazenar o token no keychain.")
    except (EOFError, KeyboardInterrupt):
        print()

    print()
    print(f"Configuração: {config_dir}")
    print(f"Dados:   {data_dir}")
    print()
    print("Próximos passos:")
    print(f"  1. cp {dest} {config_dir / 'municipios.yaml'} (opcional)")
    if token_stored:
        print("  2. Execute: zemdocs sync")
    else:
        print(f"  2. Crie {config_dir / '.env'} com IMPERATRIZ_TOKEN")
        print("  3. Execute: zemdocs sync")


def _build_service(with_clients: bool = True) -> Any:
    """Wire repository, storage and municipal clients from the configuration."""
    from zemdocs.config import (
        get_data_dir,
        get_database_url,
        get_xml_storage_dir,
        load_municipios,
        strict_issue_dates,
    )
    from zemdocs.services.municipal_client import ClientRegistry, build_registry
    from zemdocs.services.nfse_service import NFSeService
    from zemdocs.utils.repository import DocumentRepository
    from zemdocs.utils.xml_storage import XmlStorage

    get_data_dir().mkdir(parents=True, exist_ok=True)
    repository = DocumentRepository.from_url(get_database_url())
    repository.create_all()
    storage = XmlStorage(get_xml_storage_dir())
    if with_clients:
        registry = build_registry(load_municipios(), strict_dates=strict_issue_dates())
    else:
        registry = ClientRegistry()
    return NFSeService(registry, repository, storage)


def _cmd_sync(args: list[str]) -> int:
    from zemdocs.config import get_competencia_atual
    from zemdocs.services.exceptions import SyncError

    competencia = args[0] if args else get_competencia_atual()
    service = _build_service()
    try:
        result = service.sincronizar(competencia)
    except SyncError as e:
        print(f"Erro: {e}")
        return 1

    print(f"Competência {result.competencia}:")
    print(f"  páginas:     {result.pages}")
    print(f"  novas:       {result.processed}")
    print(f"  ignoradas:   {result.skipped}")
    print(f"  com erro:    {result.errors}")
    if result.truncated:
        print("  AVISO: sincronização interrompida antes da última página")
    return 0


class _CurrentCompetenciaSync:
    """Scheduled job that syncs the competence configured at each firing."""

    name = "nfse-sync"

    def __init__(self, service: Any) -> None:
        self.service = service

    def execute(self, cancel: threading.Event | None = None) -> Any:
        from zemdocs.config import get_competencia_atual

        return self.service.sincronizar(get_competencia_atual(), cancel)


def _cmd_run(args: list[str]) -> int:
    from zemdocs.config import get_drain_timeout, get_sync_interval, scheduler_enabled
    from zemdocs.services.scheduler import Scheduler

    if not scheduler_enabled():
        print("Agendador desabilitado (SCHEDULER_ENABLED=false).")
        return 0

    service = _build_service()
    scheduler = Scheduler()
    cron = get_sync_interval()
    try:
        scheduler.add_job(cron, _CurrentCompetenciaSync(service))
    except ValueError as e:
        print(f"Erro: SYNC_INTERVAL inválido: {e}")
        return 1

    stop = threading.Event()

    def _on_signal(signum: int, frame: Any) -> None:
        logging.getLogger(__name__).info("Received signal %d, shutting down", signum)
        stop.set()

    signal.signal(signal.SIGINT, _on_signal)
    signal.signal(signal.SIGTERM, _on_signal)

    scheduler.start()
    print(f"Agendador iniciado ({cron}). Ctrl+C para encerrar.")
    stop.wait()

    print("Encerrando, aguardando tarefas em execução…")
    if not scheduler.stop(timeout=get_drain_timeout()):
        print("AVISO: tarefas ainda em execução ao encerrar.")
        return 1
    return 0


def _cmd_ultimo_rps(args: list[str]) -> int:
    from zemdocs.services.exceptions import TaxApiError

    service = _build_service()
    try:
        numero = service.ultimo_rps_enviado()
    except TaxApiError as e:
        print(f"Erro: {e}")
        return 1
    print(numero)
    return 0


def _cmd_xml(args: list[str]) -> int:
    from zemdocs.services.exceptions import XmlNotFoundError

    if len(args) != 2:
        print("Uso: zemdocs xml NUMERO COMPETENCIA")
        return 2
    numero, competencia = args
    service = _build_service(with_clients=False)
    try:
        content = service.get_xml_content(numero, competencia)
    except (XmlNotFoundError, ValueError) as e:
        print(f"Erro: {e}")
        return 1
    sys.stdout.buffer.write(content)
    sys.stdout.flush()
    return 0


COMMANDS = {
    "sync": _cmd_sync,
    "run": _cmd_run,
    "ultimo-rps": _cmd_ultimo_rps,
    "xml": _cmd_xml,
}


def main() -> None:
    """Entry point for the zemdocs CLI."""
    from zemdocs.config import get_log_level

    logging.basicConfig(
        level=get_log_level(),
        format="%(asctime)s %(levelname)s %(name)s: %(message)s",
    )

    if len(sys.argv) < 2 or sys.argv[1] in ("-h", "--help", "help"):
        print(USAGE, end="")
        return

    command, args = sys.argv[1], sys.argv[2:]
    if command == "init":
        _init_config()
        return

    handler = COMMANDS.get(command)
    if handler is None:
        print(f"Comando desconhecido: {command}")
        print(USAGE, end="")
        sys.exit(2)

    try:
        code = handler(args)
    except KeyError as e:
        print(f"Erro: token da API não configurado ({e.args[0]})")
        print("Defina a variável no .env ou execute 'zemdocs init'.")
        code = 1
    if code:
        sys.exit(code)


if __name__ == "__main__":
    main()
