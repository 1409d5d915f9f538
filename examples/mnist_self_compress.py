"""
MNIST Self-Compressing Training Example

This example trains a small convolutional network on MNIST whose
convolutions learn their own bit-depths, and reports how far the
network compressed itself.
"""

from functools import partial

import torch
import torch.nn as nn
import torch.optim as optim
from torchvision import datasets, transforms
from torch.utils.data import DataLoader

from selfcompress import QConv2d, QuantizationConfig, SelfCompressingLoss
from selfcompress.nn import compression_stats


class SelfCompressingMNIST(nn.Module):
    """MNIST classifier with quantized convolutions."""

    def __init__(self, config: QuantizationConfig):
        super().__init__()
        # Weights start beyond +-0.5 so the integer-rounded kernels are not all zero.
        init = partial(nn.init.uniform_, a=-2.0, b=2.0)
        self.conv1 = QConv2d(1, 16, 3, config=config, kernel_initializer=init)
        self.conv2 = QConv2d(16, 32, 3, config=config, kernel_initializer=init)
        self.pool = nn.MaxPool2d(2)
        self.relu = nn.ReLU()

        # Standard output layer (not quantized)
        self.fc = nn.Linear(32 * 5 * 5, 10)

    def forward(self, x):
        x = self.pool(self.relu(self.conv1(x)))
        x = self.pool(self.relu(self.conv2(x)))
        return self.fc(x.flatten(1))


def train_model(model, criterion, train_loader, test_loader, epochs=3, lr=0.001):
    """Train a model and return training history."""
    device = torch.device("cuda" if torch.cuda.is_available() else "cpu")
    model = model.to(device)

    optimizer = optim.Adam(model.parameters(), lr=lr)

    history = {"train_losses": [], "test_accuracies": [], "bits_per_weight": []}

    for epoch in range(epochs):
        model.train()
        train_loss = 0.0

        for batch_idx, (data, target) in enumerate(train_loader):
            data, target = data.to(device), target.to(device)

            optimizer.zero_grad()
            output = model(data)
            loss = criterion(output, target, model)
            loss.backward()
            optimizer.step()

            train_loss += loss.item()
            if batch_idx % 100 == 0:
                print(f'Epoch {epoch}, Batch {batch_idx}, Loss: {loss.item():.4f}')

        model.eval()
        correct = 0
        total = 0
        with torch.no_grad():
            for data, target in test_loader:
                data, target = data.to(device), target.to(device)
                predicted = model(data).argmax(1)
                total += target.size(0)
                correct += predicted.eq(target).sum().item()

        stats = compression_stats(model)
        history["train_losses"].append(train_loss / len(train_loader))
        history["test_accuracies"].append(100. * correct / total)
        history["bits_per_weight"].append(stats["bits_per_weight"])

        print(
            f'Epoch {epoch}: Train Loss: {history["train_losses"][-1]:.4f}, '
            f'Test Acc: {history["test_accuracies"][-1]:.2f}%, '
            f'Bits/weight: {stats["bits_per_weight"]:.2f}, '
            f'Channels: {stats["active_channels"]}/{stats["total_channels"]}'
        )

    return history


def main():
    """Main training function."""
    print("MNIST Self-Compressing Training Example")
    print("=" * 50)

    torch.manual_seed(42)

    transform = transforms.Compose([
        transforms.ToTensor(),
        transforms.Normalize((0.1307,), (0.3081,))
    ])
    train_dataset = datasets.MNIST('data', train=True, download=True, transform=transform)
    test_dataset = datasets.MNIST('data', train=False, transform=transform)

    train_loader = DataLoader(train_dataset, batch_size=128, shuffle=True)
    test_loader = DataLoader(test_dataset, batch_size=1000, shuffle=False)

    config = QuantizationConfig(init_e=0.0)
    print(f"\nQuantization Config: {config}")
    print(f"Initial compression ratio: {config.get_compression_ratio():.2f}x")

    model = SelfCompressingMNIST(config)
    criterion = SelfCompressingLoss(config=config)
    train_model(model, criterion, train_loader, test_loader)

    print("\nQuantization Statistics:")
    for name, module in model.named_modules():
        if isinstance(module, QConv2d):
            stats = module.get_quantization_stats()
            print(
                f"{name}: {stats['active_channels']}/{stats['units']} channels, "
                f"{stats['bits_per_weight']:.2f} bits/weight, mean e {stats['mean_e']:.2f}"
            )


if __name__ == "__main__":
    main()
