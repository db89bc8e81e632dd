"""
Headless Rocket AI - Training Script
====================================

Command-line entry point for DQN training on the headless rocket
environment. Follows training through the event bus, records episode and
evaluation history, and writes CSV logs, plots and an optional ONNX export.

Author: AI Assistant
Date: August 2025
"""

import os
import sys
import asyncio
import logging
import argparse
from typing import Dict, List, Any, Optional

import numpy as np
import torch
import pandas as pd
import matplotlib
matplotlib.use('Agg')
import matplotlib.pyplot as plt
from tqdm import tqdm

# Add rocket_rl to path
sys.path.append(os.path.dirname(os.path.abspath(__file__)))

from rocket_rl import (
    TrainingOrchestrator, TrainingConfig, EnvironmentConfig, EventBus, EventType,
    create_training_components
)
from rocket_rl.config import load_training_config, load_environment_config
from rocket_rl.policy_export import PolicyExporter

logger = logging.getLogger(__name__)

DEFAULT_CONFIG = os.path.join(os.path.dirname(os.path.abspath(__file__)), 'configs', 'training_params.yaml')
DEFAULT_ENV_CONFIG = os.path.join(os.path.dirname(os.path.abspath(__file__)), 'configs', 'environment.yaml')


def configure_logging(log_file: str = 'training.log'):
    logging.basicConfig(
        level=logging.INFO,
        format='%(asctime)s - %(name)s - %(levelname)s - %(message)s',
        handlers=[
            logging.FileHandler(log_file),
            logging.StreamHandler()
        ]
    )


class TrainingRunner:
    """
    Runs a training session and collects its telemetry.
    """

    def __init__(self,
                 training_config: TrainingConfig,
                 env_config: Optional[EnvironmentConfig] = None,
                 output_dir: str = 'results',
                 resume: bool = False,
                 seed: Optional[int] = None,
                 show_progress: bool = True):
        self.training_config = training_config
        self.env_config = env_config
        self.output_dir = output_dir
        self.resume = resume
        self.seed = seed
        self.show_progress = show_progress

        self.event_bus = EventBus()
        self.orchestrator = TrainingOrchestrator(
            event_bus=self.event_bus,
            config=training_config,
            env_config=env_config,
            component_factory=self._create_components
        )

        self.training_history: List[Dict[str, Any]] = []
        self.evaluation_history: List[Dict[str, Any]] = []
        self.summary: Optional[Dict[str, Any]] = None
        self.error: Optional[str] = None
        self._pbar = None

        self._create_directories()

        self.orchestrator.add_listener(EventType.TRAINING_PROGRESS, self._on_progress)
        self.orchestrator.add_listener(EventType.EVALUATION_COMPLETED, self._on_evaluation)
        self.orchestrator.add_listener(EventType.TRAINING_COMPLETED, self._on_completed)
        self.orchestrator.add_listener(EventType.TRAINING_ERROR, self._on_error)

    def _create_directories(self):
        for directory in ('models', 'plots', 'csv_logs'):
            os.makedirs(os.path.join(self.output_dir, directory), exist_ok=True)

    def _create_components(self, config: TrainingConfig, event_bus: EventBus):
        components = create_training_components(config, self.env_config, event_bus, seed=self.seed)
        if self.resume:
            if components.agent.load(config.checkpoint_slot):
                logger.info(f"Resuming from checkpoint slot '{config.checkpoint_slot}'")
            else:
                logger.info("No checkpoint to resume from; starting fresh")
        return components

    # ------------------------------------------------------------------
    # Event handlers
    # ------------------------------------------------------------------

    def _on_progress(self, payload: Dict[str, Any]):
        self.training_history.append({
            'episode': payload['episode'],
            'reward': payload['reward'],
            'length': payload['steps'],
            'success': payload['success'],
            'average_reward': payload['average_reward'],
            'success_rate': payload['success_rate'],
            'epsilon': payload['epsilon'],
            'loss': payload['loss'],
            'total_steps': payload['total_steps'],
        })
        if self._pbar is not None:
            self._pbar.update(1)
            self._pbar.set_postfix({
                'Reward': f"{payload['reward']:.1f}",
                'Avg': f"{payload['average_reward']:.1f}",
                'Success': f"{payload['success_rate']:.2f}",
                'Eps': f"{payload['epsilon']:.3f}"
            })

    def _on_evaluation(self, payload: Dict[str, Any]):
        self.evaluation_history.append(dict(payload))

    def _on_completed(self, payload: Dict[str, Any]):
        self.summary = dict(payload)

    def _on_error(self, payload: Dict[str, Any]):
        self.error = payload.get('error')

    # ------------------------------------------------------------------
    # Run
    # ------------------------------------------------------------------

    async def run(self) -> Optional[Dict[str, Any]]:
        logger.info(f"Starting DQN training: objectives {self.training_config.objectives}")
        with tqdm(total=self.training_config.max_episodes, desc="Training",
                  disable=not self.show_progress) as pbar:
            self._pbar = pbar
            try:
                statistics = await self.orchestrator.start()
            finally:
                self._pbar = None

        if statistics is not None:
            self.summary = statistics
        return statistics

    def export_policy(self, output_path: Optional[str] = None) -> Optional[str]:
        """Export the trained greedy policy to ONNX."""
        agent = self.orchestrator.agent
        if agent is None or agent.is_disposed:
            logger.warning("No trained agent available for export")
            return None

        output_path = output_path or os.path.join(self.output_dir, 'models', 'rocket_policy.onnx')
        exporter = PolicyExporter()
        exporter.export_to_onnx(agent.q_network, output_path)
        exporter.verify_onnx_policy(agent.q_network, output_path, seed=self.seed)
        return output_path

    def save_training_history(self):
        """Save training history to CSV files."""
        csv_dir = os.path.join(self.output_dir, 'csv_logs')
        if self.training_history:
            pd.DataFrame(self.training_history).to_csv(
                os.path.join(csv_dir, 'training_episodes.csv'), index=False)
        if self.evaluation_history:
            pd.DataFrame(self.evaluation_history).to_csv(
                os.path.join(csv_dir, 'evaluation_results.csv'), index=False)
        logger.info("Training history saved to CSV files")

    def generate_plots(self):
        """Generate training visualization plots."""
        if not self.training_history:
            return

        df = pd.DataFrame(self.training_history)

        fig, axes = plt.subplots(2, 2, figsize=(14, 10))
        fig.suptitle('DQN Training Results - Headless Rocket', fontsize=16)

        axes[0, 0].plot(df['episode'], df['reward'], alpha=0.3, color='blue')
        window_size = min(100, len(df) // 10)
        if window_size > 1:
            moving_avg = df['reward'].rolling(window=window_size).mean()
            axes[0, 0].plot(df['episode'], moving_avg, color='red', linewidth=2, label=f'MA({window_size})')
            axes[0, 0].legend()
        axes[0, 0].set_xlabel('Episode')
        axes[0, 0].set_ylabel('Episode Reward')
        axes[0, 0].set_title('Training Rewards')
        axes[0, 0].grid(True)

        axes[0, 1].plot(df['episode'], df['length'], alpha=0.6, color='green')
        axes[0, 1].set_xlabel('Episode')
        axes[0, 1].set_ylabel('Episode Length')
        axes[0, 1].set_title('Episode Lengths')
        axes[0, 1].grid(True)

        axes[1, 0].plot(df['episode'], df['success_rate'], color='orange')
        axes[1, 0].set_xlabel('Episode')
        axes[1, 0].set_ylabel('Cumulative Success Rate')
        axes[1, 0].set_ylim(0, 1)
        axes[1, 0].set_title('Mission Success')
        axes[1, 0].grid(True)

        axes[1, 1].plot(df['episode'], df['epsilon'], color='black')
        axes[1, 1].set_xlabel('Episode')
        axes[1, 1].set_ylabel('Epsilon')
        axes[1, 1].set_title('Exploration Schedule')
        axes[1, 1].grid(True)

        plt.tight_layout()
        plt.savefig(os.path.join(self.output_dir, 'plots', 'training_summary.png'), dpi=150, bbox_inches='tight')
        plt.close(fig)

        if self.evaluation_history:
            eval_df = pd.DataFrame(self.evaluation_history)

            fig, axes = plt.subplots(1, 2, figsize=(12, 5))
            axes[0].plot(eval_df['episode'], eval_df['average_score'], 'o-', color='blue')
            axes[0].set_xlabel('Episode')
            axes[0].set_ylabel('Average Evaluation Score')
            axes[0].set_title('Evaluation Performance')
            axes[0].grid(True)

            axes[1].plot(eval_df['episode'], eval_df['success_rate'], 'o-', color='green')
            axes[1].set_xlabel('Episode')
            axes[1].set_ylabel('Success Rate')
            axes[1].set_title('Evaluation Success Rate')
            axes[1].set_ylim(0, 1)
            axes[1].grid(True)

            plt.tight_layout()
            plt.savefig(os.path.join(self.output_dir, 'plots', 'evaluation_results.png'), dpi=150, bbox_inches='tight')
            plt.close(fig)

        logger.info("Training plots generated and saved")

    def cleanup(self):
        self.orchestrator.cleanup()


def build_training_config(args: argparse.Namespace) -> TrainingConfig:
    config = load_training_config(args.config) if os.path.exists(args.config) else TrainingConfig()
    overrides = {}
    if args.objective:
        overrides['objectives'] = [args.objective]
    if args.episodes:
        overrides['max_episodes'] = args.episodes
    return config.merged(overrides)


def main():
    """Main training function."""
    parser = argparse.ArgumentParser(description='Train a DQN agent on the headless rocket environment')
    parser.add_argument('--config', type=str, default=DEFAULT_CONFIG,
                        help='Path to training configuration file')
    parser.add_argument('--env-config', type=str, default=DEFAULT_ENV_CONFIG,
                        help='Path to environment configuration file')
    parser.add_argument('--objective', type=str, default=None,
                        help='Objective to train (overrides the configured list)')
    parser.add_argument('--episodes', type=int, default=None,
                        help='Number of training episodes')
    parser.add_argument('--output-dir', type=str, default='results',
                        help='Directory for models, logs and plots')
    parser.add_argument('--resume', action='store_true',
                        help='Resume from the configured checkpoint slot')
    parser.add_argument('--export-onnx', action='store_true',
                        help='Export the final policy to ONNX')
    parser.add_argument('--seed', type=int, default=42,
                        help='Random seed for reproducibility')

    args = parser.parse_args()
    configure_logging()

    # Set random seeds
    np.random.seed(args.seed)
    torch.manual_seed(args.seed)

    training_config = build_training_config(args)
    env_config = load_environment_config(args.env_config) if os.path.exists(args.env_config) else None

    runner = TrainingRunner(training_config, env_config, output_dir=args.output_dir,
                            resume=args.resume, seed=args.seed)
    try:
        statistics = asyncio.run(runner.run())
        if statistics is None:
            logger.error(f"Training failed: {runner.error}")
            sys.exit(1)

        logger.info(f"Training summary: {statistics}")
        if args.export_onnx:
            runner.export_policy()

    except KeyboardInterrupt:
        logger.info("Training interrupted by user")
        runner.orchestrator.stop()

    finally:
        runner.save_training_history()
        runner.generate_plots()
        runner.cleanup()


if __name__ == "__main__":
    main()
